# behavioral_auth/config.py
import os


class Config:
    """Base configuration class"""
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'a-very-secret-key'
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Worker threads shared by all capture sessions
    CAPTURE_MAX_WORKERS = int(os.environ.get('CAPTURE_MAX_WORKERS', 16))
    # Join timeout for capturers, defaults to the maximum sampling duration
    CAPTURE_JOIN_TIMEOUT_MS = int(os.environ.get('CAPTURE_JOIN_TIMEOUT_MS', 8000))

    CAPTURE_CONFIG = {
        'channel_size': 2048,
        'poll_interval_s': 0.05,
        'keystroke_window_gap_ms': 2000,
        'min_keystrokes_per_window': 5,
        'min_movement_points': 5,
        'min_movement_duration_ms': 50,
        'movement_gap_ms': 150,
        'max_movement_points': 1000,
        'tap_max_distance': 10,
        'tap_max_duration_ms': 300,
        'drag_min_distance': 20,
        'click_context_points': 10,
        'multi_click_window_ms': 500,
        'min_patterns': 1,
    }

    SAMPLING_CONFIG = {
        'base_duration_ms': 3000,
        'min_duration_ms': 1000,
        'max_duration_ms': 8000,
        'history_size': 100,
    }

    MATCHER_CONFIG = {
        'pool_size': 50,
        'anomaly_threshold': 0.5,
        'anomaly_scale_floor': 0.1,
        'similarity_weight': 0.7,
    }

    FUSION_CONFIG = {
        'success_confidence': 70.0,
        'success_max_risk': 50.0,
        'alpha': 0.35,
        'beta': 0.25,
        'gamma': 0.25,
        'delta': 0.15,
        'lambda': 0.3,
        'mu': 0.2,
    }

    LEARNING_CONFIG = {
        'min_confidence': 70.0,
        'drift_protection_threshold': 0.3,
        'max_patterns_stored': 50,
        'stability_threshold': 0.85,
        'min_patterns_for_stability': 10,
        'lock_after_rejections': 3,
        'weights_learning_rate': 0.001,
        'weights_momentum': 0.9,
    }

    AMPLITUDE_CONFIG = {
        'min_keys': 10,
        'machine_dwell_diff_ms': 15,
        'machine_uniform_ratio': 0.8,
        'max_human_wpm': 300,
        'flag_risk': 0.25,
    }

    @staticmethod
    def init_app(app):
        pass


class DevelopmentConfig(Config):
    """Development configuration"""
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = os.environ.get('DEV_DATABASE_URL') or \
        'sqlite:///' + os.path.join(os.path.abspath(os.path.dirname(__file__)), 'database/biometrics_dev.db')


class TestingConfig(Config):
    """Testing configuration"""
    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.environ.get('TEST_DATABASE_URL') or 'sqlite:///:memory:'
    CAPTURE_MAX_WORKERS = 8
    CAPTURE_JOIN_TIMEOUT_MS = 2000


class ProductionConfig(Config):
    """Production configuration"""
    DEBUG = False
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or \
        'sqlite:///' + os.path.join(os.path.abspath(os.path.dirname(__file__)), 'database/biometrics.db')


config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}


def service_config(source) -> dict:
    """Core tunables from a config class or a Flask config mapping"""
    get = source.get if hasattr(source, 'get') else lambda key, default=None: getattr(source, key, default)
    return {
        'max_workers': get('CAPTURE_MAX_WORKERS', Config.CAPTURE_MAX_WORKERS),
        'capture_join_timeout_ms': get('CAPTURE_JOIN_TIMEOUT_MS', Config.CAPTURE_JOIN_TIMEOUT_MS),
        'capture': dict(get('CAPTURE_CONFIG', Config.CAPTURE_CONFIG)),
        'sampling': dict(get('SAMPLING_CONFIG', Config.SAMPLING_CONFIG)),
        'matcher': dict(get('MATCHER_CONFIG', Config.MATCHER_CONFIG)),
        'fusion': dict(get('FUSION_CONFIG', Config.FUSION_CONFIG)),
        'learning': dict(get('LEARNING_CONFIG', Config.LEARNING_CONFIG)),
        'amplitude': dict(get('AMPLITUDE_CONFIG', Config.AMPLITUDE_CONFIG)),
    }
