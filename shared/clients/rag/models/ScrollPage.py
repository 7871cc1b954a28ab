from pydantic import BaseModel


class StoredPoint(BaseModel):
    """A point as returned by a scroll: its id and the requested payload fields (empty if none were requested)."""

    id: str
    payload: dict = {}


class ScrollPage(BaseModel):
    """One scroll page, or every page collected by do_scroll_all().

    Attributes:
        points:           Points of the page in backend order.
        next_page_offset: Cursor for the next page, or None when all pages
                          have been consumed. Always None on results returned
                          by do_scroll_all().
    """

    points: list[StoredPoint]
    next_page_offset: str | None = None

    def ids(self) -> list[str]:
        return [point.id for point in self.points]
