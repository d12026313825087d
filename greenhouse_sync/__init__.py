"""Device state synchronization and health aggregation for greenhouse IoT backends."""

__version__ = "0.1.0"
