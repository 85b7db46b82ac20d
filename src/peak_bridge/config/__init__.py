__all__ = ["ExecutionConfig", "load_execution_config"]

from peak_bridge.config.execution import ExecutionConfig, load_execution_config
