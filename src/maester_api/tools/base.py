from abc import ABC, abstractmethod


class ComplianceEngineAdapter(ABC):
    @abstractmethod
    def build_selection(self, suites=None, tags=None, severity=None,
                        include_long_running=False, include_preview=False) -> dict:
        pass

    @abstractmethod
    def run_scan(self, selection: dict, env: dict) -> dict:
        """Run the engine and return its raw result document."""
        pass
