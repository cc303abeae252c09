import base64

import cv2  # type: ignore
import numpy as np  # type: ignore
from fastapi import HTTPException, UploadFile

from campusid.config import ALLOWED_IMAGE_TYPES


async def read_image_upload(file: UploadFile) -> str:
    """Validate an uploaded JPG/PNG and return it as a base64 data URL.

    The image is only decoded to prove it is one; nothing else is done to it.
    """
    if file.content_type not in ALLOWED_IMAGE_TYPES:
        raise HTTPException(status_code=400, detail="Upload JPG/PNG only.")

    data = await file.read()
    if not data:
        raise HTTPException(status_code=400, detail="Empty image upload.")

    img_array = np.frombuffer(data, np.uint8)
    frame = cv2.imdecode(img_array, cv2.IMREAD_COLOR)
    if frame is None:
        raise HTTPException(status_code=400, detail="Invalid image data.")

    encoded = base64.b64encode(data).decode("ascii")
    return f"data:{file.content_type};base64,{encoded}"
