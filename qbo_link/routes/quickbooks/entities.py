from typing import Optional

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from qbo_link.services.entity_service import EntityRequestEngine

router = APIRouter()


def get_engine(request: Request) -> EntityRequestEngine:
    return request.app.state.entity_engine


@router.get("/{realm_id}/{entity_type}")
async def query_entities(
    realm_id: str,
    entity_type: str,
    where: Optional[str] = None,
    order_by: Optional[str] = None,
    limit: Optional[int] = None,
    offset: Optional[int] = None,
    fetch_all: bool = False,
    engine: EntityRequestEngine = Depends(get_engine),
):
    """
    Runs a query for one entity type. ``where`` is passed to QuickBooks as written.
    """
    result = await engine.query(
        realm_id, entity_type, where, limit=limit, offset=offset, order_by=order_by, fetch_all=fetch_all
    )
    return JSONResponse(
        status_code=status.HTTP_200_OK,
        content=jsonable_encoder(
            {
                "success": True,
                "data": {
                    "entity_type": result.entity_type,
                    "records": [record.to_payload() for record in result.records],
                    "start_position": result.start_position,
                    "count": result.max_results,
                },
            }
        ),
    )


@router.get("/{realm_id}/{entity_type}/{entity_id}")
async def read_entity(
    realm_id: str,
    entity_type: str,
    entity_id: str,
    engine: EntityRequestEngine = Depends(get_engine),
):
    record = await engine.read(realm_id, entity_type, entity_id)
    return JSONResponse(
        status_code=status.HTTP_200_OK,
        content=jsonable_encoder({"success": True, "data": {record.entity_type: record.to_payload()}}),
    )


@router.get("/{realm_id}/{entity_type}/{entity_id}/pdf")
async def entity_pdf(
    realm_id: str,
    entity_type: str,
    entity_id: str,
    engine: EntityRequestEngine = Depends(get_engine),
):
    content = await engine.get_pdf(realm_id, entity_type, entity_id)
    return Response(content=content, media_type="application/pdf")
