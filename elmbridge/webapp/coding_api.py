from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from elmbridge.coding_functions import CATEGORY_LABELS, RISK_LEVELS, functions_for_plan, get_function

from . import diag_api

router = APIRouter(prefix='/api/coding', tags=['coding'])


class ExecuteRequest(BaseModel):
    function_id: str
    pro: bool = False
    confirm: bool = False


@router.get('/functions')
def list_coding_functions(pro: bool = False):
    """Catalog entries available for the caller's plan."""
    return {
        'functions': [f.to_dict() for f in functions_for_plan(pro)],
        'categories': CATEGORY_LABELS,
        'risk_levels': RISK_LEVELS,
    }


@router.post('/execute')
def execute_coding_function(req: ExecuteRequest):
    fn = get_function(req.function_id)
    if fn is None:
        raise HTTPException(status_code=404, detail=f'unknown function: {req.function_id}')
    mgr = diag_api.get_manager()
    ok, reason = mgr.can_execute(fn, req.pro)
    if not ok:
        raise HTTPException(status_code=403, detail=reason)
    if fn.confirmation_required and not req.confirm:
        raise HTTPException(status_code=403, detail='confirm=true required for this function')
    return mgr.execute(fn)
