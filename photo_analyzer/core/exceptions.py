"""
Error taxonomy for the analysis pipeline.

- ModelCallError: an inference call for one batch failed. Recovered locally by
  recording every item of the batch as failed for the running task.
- DataIntegrityError: an upstream field a later stage needs is missing. Aborts
  the run.
- ProcessNotFoundError: no process / task list is loaded. Raised at entry.
- PackageNotFoundError: unknown task package identifier.
"""


class PhotoAnalyzerError(Exception):
    """Base class for analyzer errors."""
    pass


class ModelCallError(PhotoAnalyzerError):
    """Raised when a call to the inference service fails."""
    
    def __init__(self, operation: str, message: str):
        self.operation = operation
        super().__init__(f"{operation} failed: {message}")


class DataIntegrityError(PhotoAnalyzerError):
    """Raised when a required upstream field is missing."""
    pass


class ProcessNotFoundError(PhotoAnalyzerError):
    """Raised when a run is started without a loaded process."""
    pass


class PackageNotFoundError(PhotoAnalyzerError):
    """Raised when a task package is not registered."""
    pass
