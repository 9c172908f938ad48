from typing import Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, Query, Request, UploadFile, status
from fastapi.responses import StreamingResponse

from core.blob_store import AssetUpload
from core.inventory_service import InventoryService, OperationResult
from db.inventory.item import InventoryItem
from schemas.inventory import (
    DeletedItemOut,
    InventoryItemMutationOut,
    InventoryItemOut,
    ReconcileOut,
)

router = APIRouter()

UPLOAD_READ_SIZE = 64 * 1024


def get_inventory_service(request: Request) -> InventoryService:
    return request.app.state.inventory_service


def _item_out(service: InventoryService, item: InventoryItem) -> Dict:
    data = item.to_schema
    data["asset_url"] = f"/items/{item.id}/asset" if item.asset_id else None
    data["low_stock"] = service.is_low_stock(item)
    return data


def _mutation_out(service: InventoryService, result: OperationResult) -> Dict:
    data = _item_out(service, result.item)
    data["diagnostics"] = result.diagnostics
    return data


def _form_fields(**values: Optional[str]) -> Dict[str, str]:
    # Absent form fields stay absent so partial updates never reset them.
    return {name: value for name, value in values.items() if value is not None}


def _as_upload(file: Optional[UploadFile]) -> Optional[AssetUpload]:
    if file is None:
        return None
    if not file.filename and not file.size:
        # Browsers send an empty part when the picture input is left blank.
        return None

    async def chunks():
        while True:
            data = await file.read(UPLOAD_READ_SIZE)
            if not data:
                break
            yield data

    return AssetUpload(
        filename=file.filename or "",
        content_type=file.content_type,
        chunks=chunks(),
        declared_size=file.size,
    )


@router.get("", response_model=List[InventoryItemOut])
async def list_items(
    item_type: Optional[str] = None,
    status: Optional[str] = None,
    q: Optional[str] = None,
    service: InventoryService = Depends(get_inventory_service),
):
    """List inventory items. Pictures are referenced by asset_url, never inlined."""
    items = await service.list_items(item_type=item_type, status=status, q=q)
    return [_item_out(service, item) for item in items]


@router.get("/lowStock", response_model=List[InventoryItemOut])
@router.get("/low-stock", response_model=List[InventoryItemOut], include_in_schema=False)
async def list_low_stock(service: InventoryService = Depends(get_inventory_service)):
    """Items whose quantity is below the configured low stock threshold."""
    items = await service.list_low_stock()
    return [_item_out(service, item) for item in items]


@router.post("/maintenance/reconcile-assets", response_model=ReconcileOut)
async def reconcile_assets(
    grace_seconds: Optional[int] = Query(None, ge=0),
    service: InventoryService = Depends(get_inventory_service),
):
    """Delete pictures no item references any more."""
    deleted = await service.reconcile_assets(grace_seconds)
    return {"deleted": deleted}


@router.get("/{item_id}", response_model=InventoryItemOut)
async def get_item(item_id: UUID, service: InventoryService = Depends(get_inventory_service)):
    item = await service.get_item(item_id)
    return _item_out(service, item)


@router.post("", response_model=InventoryItemMutationOut, status_code=status.HTTP_201_CREATED)
async def create_item(
    item_name: Optional[str] = Form(None),
    item_type: Optional[str] = Form(None),
    quantity: Optional[str] = Form(None),
    unit: Optional[str] = Form(None),
    storage_location: Optional[str] = Form(None),
    status: Optional[str] = Form(None),
    picture: Optional[UploadFile] = File(None),
    service: InventoryService = Depends(get_inventory_service),
):
    """Create an inventory item, optionally with a JPEG/PNG picture."""
    fields = _form_fields(
        item_name=item_name,
        item_type=item_type,
        quantity=quantity,
        unit=unit,
        storage_location=storage_location,
        status=status,
    )
    result = await service.create_item(fields, _as_upload(picture))
    return _mutation_out(service, result)


@router.put("/{item_id}", response_model=InventoryItemMutationOut)
async def update_item(
    item_id: UUID,
    item_name: Optional[str] = Form(None),
    item_type: Optional[str] = Form(None),
    quantity: Optional[str] = Form(None),
    unit: Optional[str] = Form(None),
    storage_location: Optional[str] = Form(None),
    status: Optional[str] = Form(None),
    picture: Optional[UploadFile] = File(None),
    service: InventoryService = Depends(get_inventory_service),
):
    """Partially update an item; a picture part replaces the current picture."""
    fields = _form_fields(
        item_name=item_name,
        item_type=item_type,
        quantity=quantity,
        unit=unit,
        storage_location=storage_location,
        status=status,
    )
    result = await service.update_item(item_id, fields, _as_upload(picture))
    return _mutation_out(service, result)


@router.delete("/{item_id}", response_model=DeletedItemOut)
async def delete_item(item_id: UUID, service: InventoryService = Depends(get_inventory_service)):
    """Delete an item and its picture."""
    result = await service.delete_item(item_id)
    return {"id": result.item.id, "diagnostics": result.diagnostics}


@router.get("/{item_id}/asset")
async def get_item_asset(item_id: UUID, service: InventoryService = Depends(get_inventory_service)):
    """Stream the item's picture with its stored MIME type."""
    info, stream = await service.open_asset(item_id)
    headers = {
        "Content-Length": str(info.size_bytes),
        "Content-Disposition": 'inline; filename="%s"' % info.filename.replace('"', ''),
    }
    return StreamingResponse(stream, media_type=info.mime_type, headers=headers)
