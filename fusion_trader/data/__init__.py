from .decision_poller import DecisionPoller, DecisionSink, SnapshotProvider

__all__ = ["DecisionPoller", "DecisionSink", "SnapshotProvider"]
