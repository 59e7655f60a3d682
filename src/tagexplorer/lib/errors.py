"""Exceptions shared by the store, upload and CLI layers."""


class TagExplorerError(Exception):
    """Base class for errors the CLI reports to the user."""
    pass


class NotFoundError(TagExplorerError):
    """Raised when a file or tag id does not exist."""
    pass


class TagConflictError(TagExplorerError):
    """Raised when a tag rename would collide with another tag's name."""

    def __init__(self, name: str, existing_id: int):
        super().__init__(f"A tag named '{name}' already exists (id={existing_id})")
        self.name = name
        self.existing_id = existing_id


class UploadError(TagExplorerError):
    """Raised by the blob store and upload pipeline.

    `code` is one of the keys of `tagexplorer.services.upload.ERROR_MESSAGES`.
    """

    def __init__(self, code: str, detail: str | None = None):
        super().__init__(detail or code)
        self.code = code
