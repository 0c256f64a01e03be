from .orchestrator import CycleEvaluation, DecisionOrchestrator, create_orchestrator

__all__ = ["CycleEvaluation", "DecisionOrchestrator", "create_orchestrator"]
