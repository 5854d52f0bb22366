from pydantic import BaseModel


class Tag(BaseModel):
    name: str
    line: int
    byte_offset: int
    pattern: str


class FileSection(BaseModel):
    path: str
    tags: list[Tag]
