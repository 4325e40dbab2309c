"""Content collaborator seam: thread manifests and default state seeding."""

from .manifest import ContentManifest, ThreadManifest

__all__ = ["ContentManifest", "ThreadManifest"]
