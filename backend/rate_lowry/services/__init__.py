"""
Rate Lowry Backend — Services Layer
=====================================

Business rules between the HTTP routers and the database.

Service Inventory:
    - ReviewService:     validation, admission control, listing, soft delete
    - ReviewWriteBuffer: batched review inserts for bursty traffic
    - FoodItemService:   per-(food item, station) aggregates behind a TTL cache
    - StationService:    station list, creation and seeding
    - FileService:       upload validation and local staging
    - ImageHostService:  Cloudinary uploads with retry and circuit breaker
    - UploadService:     validate → stage → host → clean up

Routers and the CLI import the module-level singletons.
"""
