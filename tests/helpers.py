import base64
import io
import os

from PIL import Image


def register(client, email="ada@example.com", password="secret1", **extra):
    body = {
        "name": "Ada",
        "email": email,
        "password": password,
        "confirmPassword": password,
        "agreeToTerms": True,
    }
    body.update(extra)
    return client.post("/api/auth/register", json=body)


def login_headers(client, email="ada@example.com", password="secret1"):
    r = client.post("/api/auth/login", json={"email": email, "password": password})
    assert r.status_code == 200, r.text
    return {"Authorization": f"Bearer {r.json()['token']}"}


def image_bytes(size=(64, 64), fmt="PNG", noise=False, color=(200, 30, 30)):
    if noise:
        im = Image.frombytes("RGB", size, os.urandom(size[0] * size[1] * 3))
    else:
        im = Image.new("RGB", size, color)
    out = io.BytesIO()
    im.save(out, format=fmt)
    return out.getvalue()


def data_uri(data, subtype="png"):
    return f"data:image/{subtype};base64,{base64.b64encode(data).decode('ascii')}"
