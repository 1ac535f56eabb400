from app.models.brand import Brand
from app.models.product import Product
from app.models.tag import Tag
from app.models.tag_scan import TagScan

__all__ = ["Brand", "Product", "Tag", "TagScan"]
