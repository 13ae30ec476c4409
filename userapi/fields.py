import re

_boundary = re.compile(r"(?<=[a-z0-9])([A-Z])")

def snake_case(name):
    """
    Converts a mixed or camelCase identifier to snake_case, e.g. OAuthToken
    becomes oauth_token and accessTokenExpiresAt becomes
    access_token_expires_at.
    """
    return _boundary.sub(r"_\1", name).lower()

class FieldMap:
    """
    Explicit mapping between the field names the application uses and the
    columns of one table. Field names may also be given in camelCase.
    """

    def __init__(self, table, fields):
        self.table = table
        self.fields = dict(fields)
        self.columns = { c: f for f, c in self.fields.items() }
        if len(self.columns) != len(self.fields):
            raise ValueError(
                    "Field map for {} maps two fields to one column".format(
                        table))

    def __repr__(self):
        return "<FieldMap {}>".format(self.table)

    def validate(self, table):
        missing = [c for c in self.columns if c not in table.c]
        if missing:
            raise ValueError("Field map for {} names unknown columns: {}"
                    .format(self.table, ", ".join(sorted(missing))))

    def column(self, name):
        if name in self.fields:
            return self.fields[name]
        snake = snake_case(name)
        if snake in self.fields:
            return self.fields[snake]
        raise KeyError("{} has no field {}".format(self.table, name))

    def dump(self, values):
        return { self.column(k): v for k, v in values.items() }

    def load(self, row):
        return { self.columns[c]: v for c, v in row.items()
                if c in self.columns }
