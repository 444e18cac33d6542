"""
Pydantic schemas for passengers.
"""
from pydantic import BaseModel, ConfigDict, Field


class PassengerCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    program_id: int = Field(..., description="Program the passenger belongs to")


class PassengerResponse(BaseModel):
    id: int
    name: str
    program_id: int
    program: str

    model_config = ConfigDict(from_attributes=True)

    @classmethod
    def from_model(cls, passenger) -> "PassengerResponse":
        return cls(
            id=passenger.id,
            name=passenger.name,
            program_id=passenger.program_id,
            program=passenger.program.name,
        )
