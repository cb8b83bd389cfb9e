from pydantic import BaseModel


class ChildCreate(BaseModel):
    name: str
    access_code: str


class ChildRead(BaseModel):
    id: int
    family_id: int
    name: str

    class Config:
        from_attributes = True


class ChildLogin(BaseModel):
    access_code: str
