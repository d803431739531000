from bson.objectid import ObjectId
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse

from auth import get_current_user
from database import get_db, to_object_id
from helpers import respond, serialize_doc
from schemas import Address, AddressUpdate

router = APIRouter(prefix="/api/users", tags=["users"])


def _normalise(line: str) -> str:
    return " ".join((line or "").lower().split())


def _save_addresses(db, user, addresses):
    db["user"].update_one({"_id": user["_id"]}, {"$set": {"addresses": addresses}})
    return [serialize_doc(a) for a in addresses]


def _find_address(addresses, address_id: str) -> dict:
    aid = to_object_id(address_id, "address")
    for a in addresses:
        if a["_id"] == aid:
            return a
    raise HTTPException(status_code=404, detail="Address not found")


@router.get("/me")
def profile(user=Depends(get_current_user)):
    return respond({
        "id": str(user["_id"]),
        "name": user.get("name"),
        "phone": user.get("phone"),
        "email": user.get("email"),
        "role": user.get("role", "user"),
        "avatar": user.get("avatar"),
        "referral_code": user.get("referral_code"),
        "wallet_balance": user.get("wallet_balance", 0),
        "addresses": [serialize_doc(a) for a in user.get("addresses", [])],
        "wishlist": [str(p) for p in user.get("wishlist", [])],
    })


@router.get("/address")
def list_addresses(user=Depends(get_current_user)):
    return respond([serialize_doc(a) for a in user.get("addresses", [])])


@router.post("/address", status_code=201)
def add_address(body: Address, user=Depends(get_current_user), db=Depends(get_db)):
    addresses = list(user.get("addresses", []))
    line = _normalise(body.address_line)
    if any(_normalise(a.get("address_line")) == line for a in addresses):
        # Re-submitting a known address is not an error.
        return JSONResponse(status_code=200, content=respond(
            [serialize_doc(a) for a in addresses], "Address already saved"))
    address = {"_id": ObjectId(), **body.model_dump()}
    if address["selected"] or not addresses:
        for a in addresses:
            a["selected"] = False
        address["selected"] = True
    addresses.append(address)
    return respond(_save_addresses(db, user, addresses), "Address added")


@router.put("/address/{address_id}")
def update_address(address_id: str, body: AddressUpdate, user=Depends(get_current_user), db=Depends(get_db)):
    addresses = list(user.get("addresses", []))
    address = _find_address(addresses, address_id)
    address.update(body.model_dump(exclude_unset=True))
    return respond(_save_addresses(db, user, addresses), "Address updated")


@router.delete("/address/{address_id}")
def delete_address(address_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    addresses = list(user.get("addresses", []))
    address = _find_address(addresses, address_id)
    addresses.remove(address)
    if address.get("selected") and addresses:
        addresses[0]["selected"] = True
    return respond(_save_addresses(db, user, addresses), "Address deleted")


@router.patch("/address/{address_id}/select")
def select_address(address_id: str, user=Depends(get_current_user), db=Depends(get_db)):
    addresses = list(user.get("addresses", []))
    chosen = _find_address(addresses, address_id)
    for a in addresses:
        a["selected"] = a is chosen
    return respond(_save_addresses(db, user, addresses), "Address selected")
