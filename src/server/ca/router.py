"""
注册请求资源的 FastAPI 路由定义。
"""

from fastapi import APIRouter, Depends, HTTPException, Response, status

from . import services
from .auth import require_bootstrap_token
from .schemas import EnrollmentCreateRequest, EnrollmentResponse

router = APIRouter(
    prefix="/ca",
    tags=["Certificate Authority"],
    dependencies=[Depends(require_bootstrap_token)],
)


@router.post("/enrollments", response_model=EnrollmentResponse, status_code=status.HTTP_201_CREATED)
async def create_enrollment(req: EnrollmentCreateRequest, response: Response) -> EnrollmentResponse:
    """
    按名称创建注册请求；同名请求已存在时返回 200 与已有资源。
    """
    try:
        enrollment, created = services.create_enrollment_service(req)
    except ValueError as e:
        # 捕获业务逻辑中定义的验证错误，返回 400
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        # 捕获所有未预期的错误并返回 500
        raise HTTPException(status_code=500, detail=f"内部服务器错误: {str(e)}")
    if not created:
        response.status_code = status.HTTP_200_OK
    return enrollment


@router.get("/enrollments/{uid}", response_model=EnrollmentResponse)
async def get_enrollment(uid: str) -> EnrollmentResponse:
    """
    查询注册请求的当前状态。
    """
    try:
        return services.get_enrollment_service(uid)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except Exception as e:
        raise HTTPException(status_code=500, detail=f"内部服务器错误: {str(e)}")
