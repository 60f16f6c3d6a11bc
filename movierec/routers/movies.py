# ---------------------------------------------
# movies.py - 영화 요약/리뷰 목록/추천 엔드포인트
# ---------------------------------------------

from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..deadline import Deadline
from ..db import get_db, get_deadline, RECOMMEND_DEFAULT_AMOUNT, RECOMMEND_MIN_AMOUNT, RECOMMEND_MAX_AMOUNT
from ..schemas import MovieOut, ReviewOut
from ..services import MovieService, ReviewService

router = APIRouter(prefix="/api/movies", tags=["movies"])


@router.get("", response_model=List[MovieOut])
def list_movies(
    ids: List[str] = Query(..., min_length=1),  # ?ids=a&ids=b
    db: Session = Depends(get_db),
):
    """
    여러 영화의 요약(평균 평점/투표 수)을 한 번에 반환합니다.
    - 하나도 없으면 404
    """
    return MovieService(db).get_movies(ids)


@router.get("/{movie_id}", response_model=MovieOut)
def get_movie(movie_id: str, db: Session = Depends(get_db), deadline: Deadline = Depends(get_deadline)):
    """
    영화 요약을 반환합니다.
    - 아직 리뷰가 없는 영화라도 (0.00, 0) 으로 응답 (행을 생성해 둠)
    """
    return MovieService(db).get_movie(movie_id, deadline)


@router.get("/{movie_id}/reviews", response_model=List[ReviewOut])
def list_reviews(movie_id: str, db: Session = Depends(get_db)):
    # 평점 내림차순. 리뷰가 없으면 404
    return ReviewService(db).reviews_for_movie(movie_id)


@router.get("/{movie_id}/recommendations", response_model=List[MovieOut])
def recommend(
    movie_id: str,
    user_id: str = Query(..., min_length=1),
    amount: int = Query(RECOMMEND_DEFAULT_AMOUNT, ge=RECOMMEND_MIN_AMOUNT, le=RECOMMEND_MAX_AMOUNT),
    db: Session = Depends(get_db),
    deadline: Deadline = Depends(get_deadline),
):
    """
    movie_id 를 본 사용자(user_id)에게 다른 영화 최대 amount 편을 추천합니다.

    동작 개요
    --------
    1) 사용자가 이 영화에 남긴 평점 ±1.5 안의 다른 리뷰어들을 찾음
       (없으면 이 영화의 모든 리뷰어)
    2) 그 리뷰어들이 높게 평가한 다른 영화를 "추천한 리뷰어 수"로 집계
    3) 부족하면 전체 평균 평점 상위 영화로 채움
    4) 그래도 하나도 없으면 404

    결과는 집합이므로 순서는 의미가 없고, 여기서는 평균 평점 내림차순으로 정렬해 응답
    """
    recs = MovieService(db).recommend(movie_id, user_id, amount, deadline)
    return sorted(recs, key=lambda m: (-m.average_rating, m.id))
