"""Audiogram and search-track plots for autonomous test results."""

import matplotlib.pyplot as plt
import numpy as np
import seaborn as sns

from ..records import Ear


def _ear_styles():
    palette = sns.color_palette("deep")
    return {
        Ear.RIGHT: dict(color=palette[3], marker='X', markersize=12,
                        markerfacecolor=palette[3], markeredgecolor='white', markeredgewidth=1),
        Ear.LEFT: dict(color=palette[0], marker='o', markersize=10,
                       markerfacecolor='none', markeredgecolor=palette[0], markeredgewidth=2),
    }


def plot_audiogram(records, true_thresholds=None, title="Audiogram", ax=None):
    """
    Plot thresholds per ear on a clinical audiogram.

    Forced thresholds (reached through an efficiency limit) are circled in
    grey. If ``true_thresholds`` is given, the simulated listener's profile
    is drawn as dashed lines for comparison.

    Args:
        records (iterable): ThresholdRecord objects
        true_thresholds (dict): ``{ear: {freq: dB}}`` reference thresholds
        title (str): Plot title
        ax (matplotlib.axes.Axes): Axes to draw on; a new figure is created if None

    Returns:
        matplotlib.figure.Figure: The figure containing the audiogram
    """
    if ax is None:
        fig, ax = plt.subplots(figsize=(10, 6))
    else:
        fig = ax.figure

    records = list(records)
    styles = _ear_styles()
    frequencies = sorted({r.frequency for r in records})

    for ear in (Ear.RIGHT, Ear.LEFT):
        ear_records = sorted((r for r in records if r.ear is ear), key=lambda r: r.frequency)
        if not ear_records:
            continue
        freqs = [r.frequency for r in ear_records]
        levels = [r.threshold for r in ear_records]
        ax.plot(freqs, levels, linestyle='-', lw=2, label=f'{ear.value.capitalize()} Ear', **styles[ear])

        forced = [r for r in ear_records if r.is_forced]
        if forced:
            ax.scatter([r.frequency for r in forced], [r.threshold for r in forced], s=250,
                       facecolors='none', edgecolors='gray', linewidths=1.5, zorder=3)

        if true_thresholds and (ear.value in true_thresholds or ear in true_thresholds):
            reference = true_thresholds.get(ear.value, true_thresholds.get(ear))
            ref_freqs = sorted(f for f in reference if f in freqs)
            ax.plot(ref_freqs, [reference[f] for f in ref_freqs], linestyle='--',
                    color=styles[ear]['color'], alpha=0.5, label=f'{ear.value.capitalize()} (true)')

    ax.set_xscale('log')
    if frequencies:
        ax.set_xticks(frequencies)
        ax.set_xticklabels([f"{f/1000:g}" for f in frequencies])
    ax.set_xlabel('Frequency (kHz)')
    ax.set_ylabel('Hearing Level (dB HL)')
    ax.set_ylim(120, -20)
    ax.set_yticks(np.arange(-20, 130, 10))
    ax.spines['top'].set_visible(False)
    ax.spines['right'].set_visible(False)
    ax.grid(True, alpha=0.3)
    ax.set_title(title)
    if records:
        ax.legend(loc='lower left')
    return fig


def plot_search_track(record, ax=None):
    """
    Plot the level sequence of one frequency search.

    Filled markers are responses, hollow markers are misses; the finalized
    threshold is drawn as a horizontal line.
    """
    if ax is None:
        fig, ax = plt.subplots(figsize=(8, 4))
    else:
        fig = ax.figure

    color = _ear_styles()[record.ear]['color'] if record.ear in (Ear.LEFT, Ear.RIGHT) else 'black'
    trials = np.arange(1, len(record.response_pattern) + 1)
    levels = [level for level, _ in record.response_pattern]
    heard = [responded for _, responded in record.response_pattern]

    ax.plot(trials, levels, color=color, lw=1, alpha=0.6)
    for trial, level, responded in zip(trials, levels, heard):
        ax.plot(trial, level, marker='o', markersize=8, color=color,
                markerfacecolor=color if responded else 'none')
    ax.axhline(record.threshold, color='gray', linestyle='--',
               label=f"Threshold {record.threshold} dB HL ({record.decision_basis.value})")

    ax.set_xlabel('Presentation')
    ax.set_ylabel('Level (dB HL)')
    ax.invert_yaxis()
    ax.set_title(f"{record.frequency} Hz - {record.ear.value.capitalize()} Ear")
    ax.legend(loc='best')
    return fig
