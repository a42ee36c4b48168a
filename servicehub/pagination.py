MAX_PAGE_SIZE = 100


def parse_page_args(page, limit, default_limit=10):
    try:
        page = max(int(page) if page else 1, 1)
        limit = max(int(limit) if limit else default_limit, 1)
    except (TypeError, ValueError):
        page, limit = 1, default_limit
    return page, min(limit, MAX_PAGE_SIZE)


def paginate_query(query, page, limit):
    total = query.order_by(None).count()
    items = query.offset((page - 1) * limit).limit(limit).all()
    total_pages = (total + limit - 1) // limit
    return items, {"total": total, "page": page, "limit": limit, "total_pages": total_pages}
