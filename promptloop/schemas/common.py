from pydantic import BaseModel


class Citation(BaseModel):
    """Source reference returned by a tool-augmented generation."""

    url: str
    title: str | None = None
