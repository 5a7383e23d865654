"""
Memory system data models.

Shapes exchanged with the generation backend and returned by retrieval.
Persisted record types live in ``memlayer.persist.records``.
"""

from typing import Any, Dict, Literal, Optional

from pydantic import BaseModel


MessageRole = Literal["system", "user", "assistant"]


class Message(BaseModel):
    """A {role, content} message sent to the generation backend."""

    role: MessageRole
    content: str

    def to_payload(self) -> Dict[str, Any]:
        return {"role": self.role, "content": self.content}


class RetrievedEntry(BaseModel):
    """A scored embedding match returned by the retriever."""

    kind: str
    row_id: Optional[int] = None
    session: Optional[str] = None
    content: str
    score: float

    def format_line(self) -> str:
        """Render as a single context line."""
        return (
            f"- [{self.kind}/{self.row_id} {self.session or 'global'} "
            f"score={self.score:.3f}] {self.content}"
        )
