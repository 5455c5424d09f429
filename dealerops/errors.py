class IngestionError(RuntimeError):
    pass


class ValidationError(IngestionError):
    """Rejected before any storage interaction; no upload record exists."""


class UnknownDatasetTypeError(ValidationError):
    pass


class EmptyBatchError(ValidationError):
    pass


class MissingBusinessKeyError(ValidationError):
    def __init__(self, key_field: str, row_index: int) -> None:
        super().__init__(f"row {row_index} is missing business key '{key_field}'")
        self.key_field = key_field
        self.row_index = row_index


class TransactionError(IngestionError):
    """An insert or update failed; the whole batch was rolled back."""


class NotFoundError(IngestionError):
    pass


class UploadStateError(IngestionError):
    pass
