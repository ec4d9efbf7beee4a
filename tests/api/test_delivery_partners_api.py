async def test_register_and_list_partners(client, admin, auth_headers):
    response = await client.post("/delivery-partners", headers=auth_headers(admin), json={
        "name": "Kiran",
        "phone": "+91 98765 43210",
        "vehicleNumber": "KA05MN4321"
    })

    assert response.status_code == 201
    data = response.json()
    assert data["name"] == "Kiran"
    assert data["isAvailable"] is True
    assert "id" in data

    listed = (await client.get("/delivery-partners", headers=auth_headers(admin))).json()
    assert [p["id"] for p in listed] == [data["id"]]


async def test_register_invalid_phone(client, admin, auth_headers):
    response = await client.post("/delivery-partners", headers=auth_headers(admin), json={
        "name": "Kiran",
        "phone": "12345"
    })
    assert response.status_code == 422


async def test_register_requires_admin(client, customer, auth_headers):
    response = await client.post("/delivery-partners", headers=auth_headers(customer), json={
        "name": "Kiran",
        "phone": "+919876543210"
    })
    assert response.status_code == 403


async def test_get_partner(client, partner, other_partner, admin, auth_headers):
    own = await client.get(f"/delivery-partners/{partner.user_id}", headers=auth_headers(partner.user))
    assert own.status_code == 200
    assert own.json()["name"] == "Vikram"

    peer = await client.get(f"/delivery-partners/{partner.user_id}", headers=auth_headers(other_partner.user))
    assert peer.status_code == 403

    missing = await client.get("/delivery-partners/424242", headers=auth_headers(admin))
    assert missing.status_code == 404


async def test_report_location(client, partner, admin, auth_headers):
    response = await client.put(
        f"/delivery-partners/{partner.user_id}/location",
        headers=auth_headers(partner.user),
        json={"lat": 12.97, "lng": 77.59}
    )

    assert response.status_code == 200
    assert response.json()["lat"] == 12.97
    assert response.json()["deliveryPartnerId"] == partner.user_id

    relayed = await client.put(
        f"/delivery-partners/{partner.user_id}/location",
        headers=auth_headers(admin),
        json={"lat": 12.97, "lng": 77.59}
    )
    assert relayed.status_code == 403


async def test_report_location_out_of_range(client, partner, auth_headers):
    response = await client.put(
        f"/delivery-partners/{partner.user_id}/location",
        headers=auth_headers(partner.user),
        json={"lat": 120, "lng": 77.59}
    )
    assert response.status_code == 422


async def test_availability(client, partner, auth_headers):
    response = await client.patch(
        f"/delivery-partners/{partner.user_id}/availability",
        headers=auth_headers(partner.user),
        json={"isAvailable": False}
    )
    assert response.status_code == 200
    assert response.json()["isAvailable"] is False


async def test_partner_orders_and_earnings(client, customer, admin, partner, products, auth_headers):
    created = await client.post("/orders", headers=auth_headers(customer), json={
        "userId": customer.id,
        "items": [{"productId": products[0].id, "quantity": 1}],
        "paymentMethod": "cash"
    })
    order_id = created.json()["order"]["id"]

    await client.patch(f"/orders/{order_id}/status", headers=auth_headers(admin), json={"status": "preparing"})
    await client.patch(f"/orders/{order_id}/assign", headers=auth_headers(admin),
                       json={"deliveryPartnerId": partner.user_id})
    for status in ("packed", "out_for_delivery"):
        await client.patch(f"/orders/{order_id}/status", headers=auth_headers(admin), json={"status": status})
    await client.patch(f"/orders/{order_id}/status", headers=auth_headers(partner.user),
                       json={"status": "delivered"})

    orders = (await client.get(f"/delivery-partners/{partner.user_id}/orders",
                               headers=auth_headers(partner.user))).json()
    assert [o["id"] for o in orders] == [order_id]

    earnings = (await client.get(f"/delivery-partners/{partner.user_id}/earnings",
                                 headers=auth_headers(partner.user))).json()
    assert earnings["totalEarnings"] == 2400
    assert earnings["deliveriesCompleted"] == 1
