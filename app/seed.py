from sqlalchemy.orm import Session

from app.db.session import SessionLocal
from app.models.brand import Brand
from app.models.enums import ChainStatus
from app.models.product import Product
from app.models.tag import Tag

# distribution_country is matched as a substring of scan location names,
# so it holds the country name rather than its ISO code.
SEED_TAGS = {
    # stamped, distributed domestically
    "TAG-SEED-STAMPED": {
        "is_stamped": True,
        "chain_status": int(ChainStatus.DISTRIBUTED),
        "metadata_json": {
            "distribution_region": "Java",
            "distribution_country": "Indonesia",
            "distribution_channel": "official_store",
            "intended_market": "domestic",
        },
    },
    # never stamped: verify reports not_stamped
    "TAG-SEED-DRAFT": {
        "is_stamped": False,
        "chain_status": None,
        "metadata_json": {},
    },
}


def seed():
    db: Session = SessionLocal()

    brand = Brand(name="Seed Brand", logo_url=None)
    db.add(brand)
    db.commit()

    product = Product(
        brand_id=brand.id,
        code="PRD-SEED-001",
        metadata_json={
            "name": "Seed Product",
            "description": "Demo product for local verification",
            "images": [],
        },
    )
    db.add(product)
    db.commit()

    for code, fields in SEED_TAGS.items():
        db.add(Tag(code=code, product_ids=[product.id], publish_status=True, **fields))
    db.commit()

    db.close()
    print("✅ Seed complete")


if __name__ == "__main__":
    seed()
