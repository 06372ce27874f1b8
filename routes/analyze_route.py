"""FastAPI routes for streaming plant diagnosis."""

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel

from controllers.analyze_controller import stream_analysis, suggest

router = APIRouter(prefix="/api/v1")


class AnalyzePayload(BaseModel):
	imageUrl: str = ""


@router.post("/analyze/image-stream")
async def analyze_image_stream(request: Request, payload: AnalyzePayload):
	"""Stream identification, disease and treatment results for one image."""
	try:
		return await stream_analysis(request, payload.imageUrl)
	except HTTPException:
		raise
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))


@router.get("/diseases/suggest")
async def suggest_diseases_route(q: str = Query("", max_length=100)):
	try:
		return await suggest(q)
	except Exception as exc:
		raise HTTPException(status_code=500, detail=str(exc))
