"""Results returned by sync controller operations."""

from pydantic import BaseModel, Field


class SyncResult(BaseModel):
    """Result of a fetch or refresh."""

    rounds: int = Field(default=0, ge=0, description="Requests answered by the server")
    fetched: list[str] = Field(default_factory=list, description="Ids stored as full records")
    changed: list[str] = Field(default_factory=list, description="Ids the server reported changed")
    removed: list[str] = Field(default_factory=list, description="Ids removed from the cache")
    recovered: bool = Field(
        default=False,
        description="Whether the cache was invalidated because changes could not be calculated",
    )
    state: str | None = Field(default=None, description="Cursor after the operation")


class CommitResult(BaseModel):
    """Result of committing local changes."""

    created: dict[str, str] = Field(
        default_factory=dict, description="Local id -> server id of created records"
    )
    updated: list[str] = Field(default_factory=list, description="Ids whose updates were accepted")
    destroyed: list[str] = Field(default_factory=list, description="Ids destroyed on the server")
    rejected: list[str] = Field(
        default_factory=list, description="Ids whose create, update or destroy was refused"
    )
