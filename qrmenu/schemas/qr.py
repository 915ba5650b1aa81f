from pydantic import BaseModel

class QRLinks(BaseModel):
    menu_url: str
    qr_image_url: str
    qr_download_url: str
