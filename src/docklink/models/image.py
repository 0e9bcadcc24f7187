"""Image data models."""

from dataclasses import dataclass, field
from typing import Any, Dict, Optional
from urllib.parse import quote


@dataclass
class Image:
    """An image reference, optionally resolved to an engine id."""

    repository: str
    tag: str = "latest"
    id: Optional[str] = None
    info: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def parse(cls, name: str) -> "Image":
        """Split ``repo[:tag]`` into an Image.

        A colon inside the last path component is the tag separator;
        ``registry:5000/repo`` keeps its port.
        """
        last_slash = name.rfind("/")
        colon = name.rfind(":")
        if colon > last_slash:
            return cls(repository=name[:colon], tag=name[colon + 1:])
        return cls(repository=name)

    @property
    def name(self) -> str:
        return f"{self.repository}:{self.tag}"

    @property
    def reference(self) -> str:
        """Path segment identifying this image in API URLs."""
        if self.id and not self.repository:
            return self.id
        return quote(self.repository, safe="") + "%3A" + quote(self.tag, safe="")

    def __str__(self) -> str:
        return self.name
