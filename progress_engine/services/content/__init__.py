from progress_engine.services.content.catalog_service import ContentCatalogService, to_object_id

__all__ = ["ContentCatalogService", "to_object_id"]
