from typing import Optional

class RuntimeConfig:
    """
    Singleton class to hold global runtime configurations.
    """
    # Verbose by default
    VERBOSE: bool = True
    SUDO_PASSWORD: Optional[str] = None
    CONFIG_FILE: str = "cluster_config.yaml"
    NORNIR_CONFIG: str = "config.yaml"
    LOG_FILE: str = "logs/kubern.log"

config = RuntimeConfig()
