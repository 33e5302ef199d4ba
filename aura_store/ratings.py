from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, Iterable


def summarize_ratings(ratings: Iterable[float]) -> Dict[str, float]:
    values = [float(rating) for rating in ratings]
    if not values:
        return {"average": 0, "count": 0}
    mean = Decimal(str(sum(values) / len(values)))
    average = float(mean.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))
    return {"average": average, "count": len(values)}


def refresh_product_rating(db, product_id) -> Dict[str, float]:
    """Recompute ``ratings`` on a product from every review it has."""
    reviews = db.reviews.find({"product": product_id}, {"rating": 1})
    summary = summarize_ratings(review.get("rating", 0) for review in reviews)
    db.products.update_one(
        {"_id": product_id},
        {
            "$set": {
                "ratings.average": summary["average"],
                "ratings.count": summary["count"],
            }
        },
    )
    return summary
