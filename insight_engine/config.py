# insight_engine/config.py
import os
from typing import Dict, Any, List, Optional
from dataclasses import dataclass, is_dataclass
import json

@dataclass
class StatisticsConfig:
    """Configuration for descriptive statistics"""
    OUTLIER_MULTIPLIER: float

@dataclass
class CorrelationConfig:
    """Configuration for pairwise correlation analysis"""
    REPORT_THRESHOLD: float  # |r| must exceed this to be surfaced
    INCLUDE_P_VALUES: bool

@dataclass
class PatternConfig:
    """Configuration for pattern detection"""
    CONFIDENCE_THRESHOLD: float
    MAX_SEASONAL_LAG: int
    KMEANS_K: int
    KMEANS_MAX_ITERATIONS: int
    RANDOM_STATE: Optional[int]
    INCLUDE_ANOMALIES: bool
    INCLUDE_OUTLIERS: bool

@dataclass
class CleaningConfig:
    """Configuration for record validation and optional auto-cleaning"""
    REMOVE_DUPLICATES: bool
    FILL_MISSING_VALUES: bool
    NORMALIZE_DATA: bool
    CONVERT_DATA_TYPES: bool
    MAX_RECORDS: int

@dataclass
class APIConfig:
    """Configuration for the analysis service"""
    DEFAULT_PORT: int
    DEFAULT_HOST: str
    WORKERS: int
    ENABLE_CORS: bool
    ENABLE_DOCS: bool

class Config:
    """Central configuration manager for the analysis engine"""

    def __init__(self, config_file: Optional[str] = None):
        """
        Initialize configuration

        Args:
            config_file: Optional path to JSON config file to override defaults
        """
        self._load_default_config()

        if config_file and os.path.exists(config_file):
            self._load_config_file(config_file)

        self._load_environment_variables()

    def _load_default_config(self):
        """Load default configuration values"""

        self.statistics = StatisticsConfig(
            OUTLIER_MULTIPLIER=1.5
        )

        self.correlation = CorrelationConfig(
            REPORT_THRESHOLD=0.3,
            INCLUDE_P_VALUES=True
        )

        self.patterns = PatternConfig(
            CONFIDENCE_THRESHOLD=0.6,
            MAX_SEASONAL_LAG=24,
            KMEANS_K=3,
            KMEANS_MAX_ITERATIONS=100,
            RANDOM_STATE=None,  # ambient randomness unless seeded
            INCLUDE_ANOMALIES=True,
            INCLUDE_OUTLIERS=True
        )

        # Row order is the time axis, so cleaning is opt-in per run
        self.cleaning = CleaningConfig(
            REMOVE_DUPLICATES=False,
            FILL_MISSING_VALUES=False,
            NORMALIZE_DATA=False,
            CONVERT_DATA_TYPES=False,
            MAX_RECORDS=500_000
        )

        self.api = APIConfig(
            DEFAULT_PORT=8000,
            DEFAULT_HOST="0.0.0.0",
            WORKERS=1,
            ENABLE_CORS=True,
            ENABLE_DOCS=True
        )

        # Additional settings
        self.log_dir = "logs"
        self.logging_level = "INFO"
        self.debug_mode = False

    def _load_config_file(self, config_file: str):
        """Load configuration from JSON file"""
        try:
            with open(config_file, 'r') as f:
                config_data = json.load(f)

            # Update configurations with values from file
            for section, values in config_data.items():
                if hasattr(self, section):
                    config_obj = getattr(self, section)
                    if not isinstance(values, dict):
                        setattr(self, section, values)
                        continue
                    for key, value in values.items():
                        if hasattr(config_obj, key):
                            setattr(config_obj, key, value)

        except (OSError, ValueError) as e:
            print(f"Warning: Could not load config file {config_file}: {e}")

    def _load_environment_variables(self):
        """Load configuration from environment variables"""

        # Correlation settings
        if os.getenv("CORRELATION_THRESHOLD"):
            self.correlation.REPORT_THRESHOLD = float(os.getenv("CORRELATION_THRESHOLD"))

        if os.getenv("INCLUDE_P_VALUES"):
            self.correlation.INCLUDE_P_VALUES = os.getenv("INCLUDE_P_VALUES").lower() == 'true'

        # Pattern settings
        if os.getenv("PATTERN_CONFIDENCE_THRESHOLD"):
            self.patterns.CONFIDENCE_THRESHOLD = float(os.getenv("PATTERN_CONFIDENCE_THRESHOLD"))

        if os.getenv("MAX_SEASONAL_LAG"):
            self.patterns.MAX_SEASONAL_LAG = int(os.getenv("MAX_SEASONAL_LAG"))

        if os.getenv("KMEANS_K"):
            self.patterns.KMEANS_K = int(os.getenv("KMEANS_K"))

        if os.getenv("KMEANS_MAX_ITERATIONS"):
            self.patterns.KMEANS_MAX_ITERATIONS = int(os.getenv("KMEANS_MAX_ITERATIONS"))

        if os.getenv("KMEANS_RANDOM_STATE"):
            self.patterns.RANDOM_STATE = int(os.getenv("KMEANS_RANDOM_STATE"))

        # API settings
        if os.getenv("API_PORT"):
            self.api.DEFAULT_PORT = int(os.getenv("API_PORT"))

        if os.getenv("API_HOST"):
            self.api.DEFAULT_HOST = os.getenv("API_HOST")

        if os.getenv("API_WORKERS"):
            self.api.WORKERS = int(os.getenv("API_WORKERS"))

        # General settings
        if os.getenv("LOG_DIR"):
            self.log_dir = os.getenv("LOG_DIR")

        if os.getenv("LOG_LEVEL"):
            self.logging_level = os.getenv("LOG_LEVEL")

        if os.getenv("DEBUG_MODE"):
            self.debug_mode = os.getenv("DEBUG_MODE").lower() == 'true'

    def get_cleaning_options(self) -> Dict[str, bool]:
        """Cleaning switches in the shape DataPreprocessor.process expects"""
        return {
            'remove_duplicates': self.cleaning.REMOVE_DUPLICATES,
            'fill_missing_values': self.cleaning.FILL_MISSING_VALUES,
            'normalize_data': self.cleaning.NORMALIZE_DATA,
            'convert_data_types': self.cleaning.CONVERT_DATA_TYPES
        }

    def save_config(self, config_file: str):
        """Save current configuration to JSON file"""
        config_dict: Dict[str, Any] = {}

        # Convert dataclasses to dictionaries
        for attr_name in dir(self):
            if not attr_name.startswith('_'):
                attr_value = getattr(self, attr_name)
                if is_dataclass(attr_value):
                    config_dict[attr_name] = dict(attr_value.__dict__)
                elif not callable(attr_value):
                    config_dict[attr_name] = attr_value

        with open(config_file, 'w') as f:
            json.dump(config_dict, f, indent=2)

    def validate_config(self) -> List[str]:
        """Validate configuration and return list of issues"""
        issues = []

        if not 0 <= self.correlation.REPORT_THRESHOLD < 1:
            issues.append(f"Invalid correlation threshold: {self.correlation.REPORT_THRESHOLD}")

        if not 0 <= self.patterns.CONFIDENCE_THRESHOLD <= 1:
            issues.append(f"Invalid pattern confidence threshold: {self.patterns.CONFIDENCE_THRESHOLD}")

        if self.patterns.MAX_SEASONAL_LAG < 2:
            issues.append(f"Seasonal lag limit must be at least 2: {self.patterns.MAX_SEASONAL_LAG}")

        if self.patterns.KMEANS_K < 2:
            issues.append(f"k-means needs at least 2 clusters: {self.patterns.KMEANS_K}")

        if self.patterns.KMEANS_MAX_ITERATIONS < 1:
            issues.append(f"Invalid k-means iteration limit: {self.patterns.KMEANS_MAX_ITERATIONS}")

        if self.statistics.OUTLIER_MULTIPLIER <= 0:
            issues.append(f"Invalid outlier multiplier: {self.statistics.OUTLIER_MULTIPLIER}")

        if self.cleaning.MAX_RECORDS <= 0:
            issues.append(f"Invalid max records: {self.cleaning.MAX_RECORDS}")

        return issues

    def __str__(self) -> str:
        """String representation of configuration"""
        return f"Config(log_dir={self.log_dir}, debug={self.debug_mode})"

# Global configuration instance
_config = None

def get_config(config_file: Optional[str] = None) -> Config:
    """Get global configuration instance (singleton pattern)"""
    global _config
    if _config is None:
        _config = Config(config_file)
    return _config

def reload_config(config_file: Optional[str] = None) -> Config:
    """Reload configuration (useful for testing)"""
    global _config
    _config = Config(config_file)
    return _config

# Example configuration file template
CONFIG_TEMPLATE = {
    "correlation": {
        "REPORT_THRESHOLD": 0.3,
        "INCLUDE_P_VALUES": True
    },
    "patterns": {
        "CONFIDENCE_THRESHOLD": 0.6,
        "MAX_SEASONAL_LAG": 24,
        "KMEANS_K": 3,
        "RANDOM_STATE": 42
    },
    "cleaning": {
        "REMOVE_DUPLICATES": False,
        "FILL_MISSING_VALUES": False
    },
    "api": {
        "DEFAULT_PORT": 8080,
        "WORKERS": 2
    }
}

def create_config_template(output_file: str):
    """Create a configuration template file"""
    with open(output_file, 'w') as f:
        json.dump(CONFIG_TEMPLATE, f, indent=2)
