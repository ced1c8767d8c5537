from datetime import datetime
from typing import List, Optional
from pydantic import AliasChoices, BaseModel, Field

class Point(BaseModel):
    lat: float = Field(validation_alias=AliasChoices("lat", "latitude"))
    lon: float = Field(validation_alias=AliasChoices("lon", "longitude"))

class LoginRequest(BaseModel):
    username: str
    password: str

class UserCreate(BaseModel):
    username: str
    password: str
    role: str = "user"
    full_name: str
    email: str
    car_name: str
    car_number: str
    obd_name: str
    bluetooth_mac: str

class UserUpdate(BaseModel):
    id: int
    username: Optional[str] = None
    password: Optional[str] = None
    full_name: Optional[str] = None
    email: Optional[str] = None
    car_name: Optional[str] = None
    car_number: Optional[str] = None
    obd_name: Optional[str] = None
    bluetooth_mac: Optional[str] = None

class LocationUpdate(BaseModel):
    user_id: int
    trip_id: str
    start_location: Point
    end_location: Point
    traveled_path: List[Point]
    start_time: datetime
    total_distance: float
    timestamp: datetime
    stop_time: Optional[datetime] = None

class SpeedReading(BaseModel):
    latitude: float
    longitude: float
    speed_obd: Optional[float] = 0.0
    speed_gps: Optional[float] = 0.0
    speed_source: Optional[str] = None
    timestamp: Optional[datetime] = None

class SpeedBatch(BaseModel):
    user_id: int
    trip_id: Optional[str] = None
    speed_data: List[SpeedReading] = Field(min_length=1)

class EventCreate(BaseModel):
    user_id: int
    trip_id: str
    event_type: str
    event_description: str
    timestamp: datetime
    latitude: Optional[float] = 0.0
    longitude: Optional[float] = 0.0

class SimulationRequest(BaseModel):
    user_id: int
    track_id: Optional[int] = None
