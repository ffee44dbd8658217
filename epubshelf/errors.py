from __future__ import annotations


class EpubError(ValueError):
    """An archive that cannot be turned into a manifest entry."""


class MalformedContainerError(EpubError):
    pass


class MissingOpfError(EpubError):
    pass


class MalformedPackageError(EpubError):
    pass


class MissingMetadataError(EpubError):
    pass


class MissingTitleError(EpubError):
    pass


class MissingCoverDeclarationError(EpubError):
    pass


class CoverItemNotFoundError(EpubError):
    pass


class NonImageCoverError(EpubError):
    pass


class CoverAssetMissingError(EpubError):
    pass


class ReaderError(RuntimeError):
    """A reading session failure that is shown to the reader instead of crashing."""


class AssetNotFoundError(ReaderError):
    pass


class ArchiveFetchError(ReaderError):
    pass


class NoReadableChaptersError(ReaderError):
    pass


class ProgressStoreError(ReaderError):
    pass


class SessionClosedError(ReaderError):
    pass
