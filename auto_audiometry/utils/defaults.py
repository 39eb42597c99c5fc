"""Constants and default values for autonomous audiometry testing."""

# Presentation level limits (dB HL)
MIN_TEST_LEVEL = -10
MAX_TEST_LEVEL = 120

# Hughson-Westlake search parameters
DEFAULT_STARTING_LEVEL = 40
STEP_UP_DB = 10
STEP_DOWN_DB = 5
TONE_DURATION_MS = 1000

# Familiarization tone
FAMILIARIZATION_FREQUENCY = 1000
FAMILIARIZATION_LEVEL = 60
FAMILIARIZATION_WINDOW_MS = 4000

# Timing (ms)
RESPONSE_WINDOW_MS = 3000
INTER_STIMULUS_DELAY_MS = 1500
POST_CATCH_TRIAL_DELAY_MS = 1000
FREQUENCY_CHANGE_DELAY_MS = 1000
EAR_SWITCH_DELAY_MS = 2000

# Clinical efficiency constraints (per frequency)
MAX_REVERSALS_PER_FREQUENCY = 4
MAX_PRESENTATIONS_PER_FREQUENCY = 10
MAX_TIME_PER_FREQUENCY_MS = 60000
MAX_RESPONSES_PER_FREQUENCY = 15
EARLY_STOP_CONFIDENCE = 0.6

# Threshold confirmation (2 out of 3 rule)
CONFIRMATION_WINDOW = 6
MIN_RESPONSES_AT_LEVEL = 3
MIN_POSITIVE_AT_LEVEL = 2

# Default test sequence
DEFAULT_TEST_EARS = ['right', 'left']
DEFAULT_TEST_FREQUENCIES = [1000, 2000, 4000, 500, 250, 8000]

# Standard audiometric frequencies, used for adjacency comparisons
STANDARD_FREQUENCIES = [125, 250, 500, 750, 1000, 1500, 2000, 3000, 4000, 6000, 8000]

# Expected normal-hearing thresholds (dB HL) by frequency
NORMAL_HEARING_THRESHOLDS = {
    125: 15, 250: 10, 500: 5, 750: 5, 1000: 0,
    1500: 0, 2000: 5, 3000: 10, 4000: 15, 6000: 20, 8000: 25
}
DEFAULT_NORMAL_THRESHOLD = 10

# Pure-tone average frequencies
PTA_FREQUENCIES = [500, 1000, 2000]

# Catch trials
CATCH_TRIAL_PROBABILITY = 0.15
CATCH_TRIAL_MIN_PRESENTATIONS = 3
CATCH_TRIAL_RECENT_WINDOW_MS = 30000
CATCH_TRIAL_MAX_RECENT = 2
CATCH_TRIAL_WEIGHTS = {
    'silence': 0.4,
    'very-low-intensity': 0.3,
    'wrong-ear': 0.2,
    'delayed-silence': 0.1
}
VERY_LOW_INTENSITY_LEVEL = -5
WRONG_EAR_LEVEL = 40
DELAYED_SILENCE_PRE_DELAY_MS = 2000

# False-response confidence weights
FALSE_RESPONSE_WEIGHTS = {
    'catch_trial': 0.35,
    'response_consistency': 0.25,
    'threshold_plausibility': 0.20,
    'reaction_time_consistency': 0.15,
    'cross_frequency': 0.05
}
MAX_FALSE_POSITIVE_RATE = 0.2
MIN_RESPONSES_FOR_CONSISTENCY = 6
MIN_TIMED_RESPONSES = 3

# Malingering risk weights
MALINGERING_WEIGHTS = {
    'consistency': 0.3,
    'cross_frequency': 0.25,
    'timing': 0.2,
    'bilateral_symmetry': 0.15,
    'progression': 0.1
}
LOW_FREQUENCY_GROUP = [250, 500, 1000]
HIGH_FREQUENCY_GROUP = [4000, 6000, 8000]

# Reaction-time categories (ms)
ANTICIPATORY_MAX_MS = 150
OPTIMAL_RANGE_MS = (300, 800)
NORMAL_RANGE_MS = (200, 1500)
DELAYED_MIN_MS = 2000
VERY_DELAYED_MIN_MS = 3500

TIMING_WINDOW_SIZE = 10
TIMING_BASELINE_SIZE = 5
FATIGUE_RATIO_CEILING = 1.5

# Population reaction-time distribution used for percentiles
POPULATION_RT_MEAN_MS = 500
POPULATION_RT_STD_MS = 200

# Response model default parameters
DEFAULT_SLOPE = 0.2
DEFAULT_GUESS_RATE = 0.01
DEFAULT_LAPSE_RATE = 0.01
