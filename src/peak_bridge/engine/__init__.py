__all__ = ["ExecutionOrchestrator", "SymbolLocks", "build_orchestrator"]

from peak_bridge.engine.orchestrator import ExecutionOrchestrator, SymbolLocks, build_orchestrator
