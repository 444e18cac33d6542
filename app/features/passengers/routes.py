"""
Passenger routes.

Every action is checked at program granularity against the actor's profile:
listing only returns passengers of programs where the actor can view them,
creating and deleting need the permission in the passenger's own program.
"""
from typing import Annotated, List
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database.engine import get_db
from app.core.errors import UnknownScope
from app.features.authorization.dependencies import get_current_profile
from app.features.authorization.guard import ensure_in_program, programs_where
from app.features.authorization.profile import AuthorizationProfile
from app.features.catalog.models import Program
from app.features.passengers.models import Passenger
from app.features.passengers.schemas import PassengerCreate, PassengerResponse
from app.utils import get_logger


log = get_logger(__name__)
router = APIRouter(tags=["passengers"])

VIEW_PASSENGER = "view-passenger"
CREATE_PASSENGER = "create-passenger"
DELETE_PASSENGER = "delete-passenger"


@router.get("", response_model=List[PassengerResponse])
async def list_passengers(
    profile: Annotated[AuthorizationProfile, Depends(get_current_profile)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Passengers of every program where the actor holds view-passenger."""
    program_ids = {p.id for p in programs_where(profile, VIEW_PASSENGER)}
    if not program_ids:
        return []
    result = await db.execute(
        select(Passenger).where(Passenger.program_id.in_(program_ids)).order_by(Passenger.id)
    )
    return [PassengerResponse.from_model(p) for p in result.scalars().all()]


@router.post("", response_model=PassengerResponse, status_code=status.HTTP_201_CREATED)
async def create_passenger(
    passenger: PassengerCreate,
    profile: Annotated[AuthorizationProfile, Depends(get_current_profile)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Create a passenger in a program where the actor holds create-passenger."""
    if await db.get(Program, passenger.program_id) is None:
        raise UnknownScope("program_id", passenger.program_id)
    ensure_in_program(profile, passenger.program_id, CREATE_PASSENGER)

    db_passenger = Passenger(name=passenger.name, program_id=passenger.program_id)
    db.add(db_passenger)
    await db.commit()
    await db.refresh(db_passenger, attribute_names=["program"])
    log.info(f"User {profile.id} created passenger {db_passenger.id} in program {db_passenger.program_id}")
    return PassengerResponse.from_model(db_passenger)


@router.delete("/{passenger_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_passenger(
    passenger_id: int,
    profile: Annotated[AuthorizationProfile, Depends(get_current_profile)],
    db: Annotated[AsyncSession, Depends(get_db)],
):
    """Delete a passenger; needs delete-passenger in the passenger's own program."""
    db_passenger = await db.get(Passenger, passenger_id)
    if db_passenger is None:
        raise HTTPException(status_code=404, detail="Passenger not found")

    ensure_in_program(profile, db_passenger.program_id, DELETE_PASSENGER)

    await db.delete(db_passenger)
    await db.commit()
    log.info(f"User {profile.id} deleted passenger {passenger_id}")
    return None
