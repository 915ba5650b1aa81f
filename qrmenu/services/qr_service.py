from urllib.parse import urlencode

class QRService:
    """Links to QR code images for the menu URL.

    The images themselves come from an external QR image service; this only
    builds the request URLs.
    """

    def __init__(self, service_url: str, menu_url: str):
        self.service_url = service_url
        self.menu_url = menu_url

    def image_url(self, data: str = None, size: int = 200) -> str:
        query = urlencode({"size": f"{size}x{size}", "data": data or self.menu_url})
        return f"{self.service_url}?{query}"

    def links(self, size: int = 200, download_size: int = 300) -> dict:
        return {
            "menu_url": self.menu_url,
            "qr_image_url": self.image_url(size=size),
            "qr_download_url": self.image_url(size=download_size),
        }
