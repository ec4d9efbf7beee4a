from typing import Optional

from pydantic import AliasChoices, BaseModel, Field, model_validator


class AuthFrame(BaseModel):
    user_id: Optional[int] = Field(default=None, validation_alias=AliasChoices("userId", "user_id"))
    token: Optional[str] = None

    @model_validator(mode="after")
    def require_identity(self):
        if self.user_id is None and not self.token:
            raise ValueError("auth requires userId or token")
        return self


class OrderRefFrame(BaseModel):
    order_id: int = Field(validation_alias=AliasChoices("orderId", "order_id"))


class PartnerRefFrame(BaseModel):
    delivery_partner_id: int = Field(
        validation_alias=AliasChoices("deliveryPartnerId", "deliveryId", "partnerId")
    )


class LatLng(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


class LocationFrame(BaseModel):
    delivery_partner_id: int = Field(
        validation_alias=AliasChoices("deliveryId", "deliveryPartnerId", "partnerId")
    )
    location: LatLng
    order_id: Optional[int] = Field(default=None, validation_alias=AliasChoices("orderId", "order_id"))

    @model_validator(mode="before")
    @classmethod
    def accept_flat_coordinates(cls, data):
        # {"partnerId": 7, "lat": .., "lng": ..} is accepted as well as the nested form
        if isinstance(data, dict) and "location" not in data and "lat" in data and "lng" in data:
            data = {**data, "location": {"lat": data["lat"], "lng": data["lng"]}}
        return data
