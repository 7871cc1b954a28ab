from pydantic import BaseModel


class QueryHit(BaseModel):
    """A single similarity search result.

    Attributes:
        id:      Point id in the RAG backend.
        score:   Similarity score as reported by the backend (higher is closer).
        payload: Stored metadata, see VectorPoint.
    """

    id: str
    score: float
    payload: dict = {}
