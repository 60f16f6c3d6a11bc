# -----------------------------------------------------------
# reviews.py - 리뷰 작성/수정/삭제 및 사용자별 리뷰 조회 엔드포인트
# -----------------------------------------------------------

from typing import List, Optional

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.orm import Session

from ..db import get_db, get_deadline
from ..deadline import Deadline
from ..schemas import ReviewEdit, ReviewIn, ReviewOut, ReviewResultOut
from ..services import ReviewService

router = APIRouter(tags=["reviews"])


@router.post("/api/reviews", response_model=ReviewResultOut, status_code=status.HTTP_201_CREATED)
def create_review(payload: ReviewIn, db: Session = Depends(get_db), deadline: Deadline = Depends(get_deadline)):
    """
    리뷰를 작성하고, 갱신된 영화 요약과 함께 반환합니다.
    - 같은 사용자가 같은 영화에 두 번 작성하면 409

    요청 바디(JSON) 예:
    {
      "movie_id": "tt0111161",
      "user_id": "u-1",
      "rating": 8.5,
      "description": "great"
    }
    """
    return ReviewService(db).record_review(
        payload.movie_id, payload.user_id, payload.rating, payload.description, deadline
    )


@router.put("/api/reviews/{review_id}", response_model=ReviewResultOut)
def edit_review(
    review_id: str,
    payload: ReviewEdit,
    db: Session = Depends(get_db),
    deadline: Deadline = Depends(get_deadline),
):
    # 평점/설명만 수정. 없는 리뷰(또는 다른 사용자의 리뷰)면 404
    return ReviewService(db).edit_review(
        review_id, payload.rating, payload.description, user_id=payload.user_id, deadline=deadline
    )


@router.delete("/api/reviews/{review_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_review(
    review_id: str,
    user_id: Optional[str] = None,
    db: Session = Depends(get_db),
    deadline: Deadline = Depends(get_deadline),
):
    ReviewService(db).remove_review(review_id, user_id=user_id, deadline=deadline)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/api/users/{user_id}/reviews", response_model=List[ReviewOut])
def list_user_reviews(user_id: str, db: Session = Depends(get_db)):
    """특정 사용자의 리뷰 목록 (평점 내림차순)."""
    return ReviewService(db).reviews_for_user(user_id)
