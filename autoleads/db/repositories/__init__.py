from autoleads.db.repositories.vehicle_repository import VehicleCreate, VehicleRepository

__all__ = ["VehicleCreate", "VehicleRepository"]
