"""
Line shopping: the best available price for every selection.
"""

from oddsedge.models.schemas import BestLine, OddsSnapshot


def find_best_lines(snapshot: OddsSnapshot, min_books: int = 2) -> list[BestLine]:
    """
    Best and worst price per event/market/selection/line across books.

    Only selections priced by at least ``min_books`` books are returned,
    sorted by the best price's edge over the cross-book average.
    """
    lines: list[BestLine] = []
    for row in snapshot.rows:
        prices: dict[tuple, list[tuple[str, float, float]]] = {}
        for book in row.bookmakers:
            for market in book.markets:
                for outcome in market.outcomes:
                    key = (market.key, outcome.selection, outcome.point)
                    prices.setdefault(key, []).append(
                        (book.key, outcome.price, outcome.decimal_odds)
                    )

        for (market_key, selection, point), quotes in prices.items():
            if len(quotes) < min_books:
                continue
            best = max(quotes, key=lambda q: q[2])
            worst = min(quotes, key=lambda q: q[2])
            average = sum(q[2] for q in quotes) / len(quotes)
            lines.append(BestLine(
                event_id=row.event_id,
                matchup=row.matchup,
                market_key=market_key,
                selection=selection,
                point=point,
                best_bookmaker=best[0],
                best_price=best[1],
                worst_bookmaker=worst[0],
                worst_price=worst[1],
                market_average_decimal=average,
                edge_vs_average=best[2] / average - 1,
                books_compared=len(quotes),
            ))

    lines.sort(key=lambda line: line.edge_vs_average, reverse=True)
    return lines
