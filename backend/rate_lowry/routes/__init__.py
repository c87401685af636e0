"""
Rate Lowry Backend — HTTP Routers
===================================

    /api/reviews      reviews.py     list, fetch, submit, soft-delete
    /api/foodItems    food_items.py  cached per-item aggregates
    /api/stations     stations.py    station list and creation
    /api/upload       upload.py      review photo upload
    /api/admin/...    admin.py       bulk maintenance (disabled in production)
    /health           health.py      liveness and dependency status
"""
