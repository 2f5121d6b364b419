from datetime import datetime

from pydantic import BaseModel, Field


class KnowledgeBaseCreate(BaseModel):
    bot_id: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=2000)


class KnowledgeBaseUpdate(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=2000)


class KnowledgeBaseOut(BaseModel):
    id: str
    bot_id: str
    name: str
    description: str | None = None
    created_at: datetime
    updated_at: datetime
    stats: dict = {}

    class Config:
        from_attributes = True


class DocumentOut(BaseModel):
    id: str
    knowledge_base_id: str
    title: str
    type: str
    url: str | None = None
    status: str
    size_bytes: int
    error: str | None = None
    created_at: datetime

    class Config:
        from_attributes = True


class TextDocumentCreate(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    content: str = Field(min_length=1)
    type: str = Field(default="TXT")
    url: str | None = Field(default=None, max_length=1024)


class FAQCreate(BaseModel):
    question: str = Field(min_length=1, max_length=2000)
    answer: str = Field(min_length=1, max_length=8000)
    category: str | None = Field(default=None, max_length=128)


class FAQUpdate(BaseModel):
    question: str | None = Field(default=None, min_length=1, max_length=2000)
    answer: str | None = Field(default=None, min_length=1, max_length=8000)
    category: str | None = Field(default=None, max_length=128)


class FAQOut(BaseModel):
    id: str
    knowledge_base_id: str
    question: str
    answer: str
    category: str | None = None
    created_at: datetime

    class Config:
        from_attributes = True


class QueryRequest(BaseModel):
    question: str = Field(min_length=1, max_length=2000)
    top_k: int = Field(default=5, ge=1, le=20)


class QueryResultChunk(BaseModel):
    document_id: str
    chunk_id: str
    chunk_index: int
    text: str


class QueryResponse(BaseModel):
    knowledge_base_id: str
    question: str
    results: list[QueryResultChunk]
    faqs: list[FAQOut] = []
