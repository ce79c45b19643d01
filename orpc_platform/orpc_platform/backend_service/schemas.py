from pydantic import BaseModel


class HelloResponse(BaseModel):
    message: str
    path: str
    method: str
