from fastapi import FastAPI

from .coding_api import router as coding_router
from .diag_api import router as diag_router


app = FastAPI(title='elmbridge')

app.include_router(diag_router)
app.include_router(coding_router)


# simple health endpoint
@app.get('/api/health')
def health():
    return {'status': 'ok'}
