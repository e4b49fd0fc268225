from fastapi import APIRouter, Depends, HTTPException, status

from app.core.deps import get_store
from app.engine.validation import sanitize_text, validate_exercise_name, validate_rest_time, validate_template
from app.schemas.workouts import CreateExerciseIn, CreateTemplateIn
from app.services.store import WorkoutStore

router = APIRouter(tags=["templates"])


@router.get("/exercises")
async def list_exercises(store: WorkoutStore = Depends(get_store)):
    return await store.list_exercises()


@router.post("/exercises", status_code=status.HTTP_201_CREATED)
async def create_exercise(payload: CreateExerciseIn, store: WorkoutStore = Depends(get_store)):
    err = validate_exercise_name(payload.name)
    if err:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=err)

    exercise = await store.create_exercise(sanitize_text(payload.name))
    return {"created": True, "exercise": exercise}


@router.get("/templates")
async def list_templates(include_archived: bool = False, store: WorkoutStore = Depends(get_store)):
    return await store.list_templates(include_archived=include_archived)


@router.post("/templates", status_code=status.HTTP_201_CREATED)
async def create_template(payload: CreateTemplateIn, store: WorkoutStore = Depends(get_store)):
    errors = validate_template(payload.name, payload.blocks)
    if payload.default_rest_between_sets_sec is not None:
        rest_err = validate_rest_time(payload.default_rest_between_sets_sec)
        if rest_err:
            errors.append(f"Default rest: {rest_err}")
    if errors:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=errors)

    template = await store.create_template(
        sanitize_text(payload.name),
        payload.blocks,
        payload.default_rest_between_sets_sec,
    )
    return {"created": True, "template": template}


@router.get("/templates/{template_id}")
async def get_template(template_id: str, store: WorkoutStore = Depends(get_store)):
    template = await store.get_template(template_id)
    if not template:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Template not found")
    return template


@router.post("/templates/{template_id}/archive")
async def archive_template(template_id: str, store: WorkoutStore = Depends(get_store)):
    if not await store.archive_template(template_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Template not found")
    return {"archived": True, "template_id": template_id}
