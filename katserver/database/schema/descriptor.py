"""
Record descriptors.

A record is a pydantic model instance. Its schema descriptor is the ordered list
of (field, column name, column type, constraints) derived once when the record
type is registered and reused for every later call, so no per-call
introspection happens on the hot path.

Column metadata is attached declaratively with ``Annotated``:

    class Player(BaseModel):
        id: Annotated[Optional[int], Column(primary_key=True)] = None
        name: Annotated[Optional[str], Column(nullable=False)] = None
        score: Optional[int] = None
"""

import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple, Type, Union

from pydantic import BaseModel, ValidationError

from ..errors import MappingError, SchemaError
from ..utils.identifiers import IdentifierValidator
from ..utils.naming import to_column_name
from ..utils.type_mapping import ColumnType, TypeMapper

logger = logging.getLogger('db.schema')


@dataclass(frozen=True)
class Column:
    """Declarative column metadata for a record field."""
    name: Optional[str] = None
    type: Optional[Union[ColumnType, str]] = None
    nullable: bool = True
    primary_key: bool = False
    unique: bool = False
    autoincrement: bool = False


@dataclass(frozen=True)
class FieldSpec:
    """Resolved mapping of one record field onto one column."""
    field_name: str
    column_name: str
    column_type: ColumnType
    nullable: bool = True
    primary_key: bool = False
    unique: bool = False
    autoincrement: bool = False
    has_metadata: bool = False


class RecordDescriptor:
    """Ordered column layout of one record type."""

    def __init__(self, record_type: Type[BaseModel], fields: List[FieldSpec]):
        if not fields:
            raise SchemaError(f"Record type '{record_type.__name__}' declares no fields")

        self.record_type = record_type
        self.fields: Tuple[FieldSpec, ...] = tuple(fields)
        self._by_column = {spec.column_name: spec for spec in self.fields}
        if len(self._by_column) != len(self.fields):
            raise SchemaError(
                f"Record type '{record_type.__name__}' maps two fields onto the same column"
            )
        self.primary_key = self._resolve_primary_key()
        self._validate_autoincrement()

    def __iter__(self) -> Iterator[FieldSpec]:
        return iter(self.fields)

    def __len__(self) -> int:
        return len(self.fields)

    def __repr__(self) -> str:
        return f"RecordDescriptor({self.record_type.__name__}, columns={self.column_names})"

    @property
    def column_names(self) -> List[str]:
        return [spec.column_name for spec in self.fields]

    @property
    def updatable_fields(self) -> List[FieldSpec]:
        """Fields carrying column metadata; only these are written by UPDATE."""
        return [spec for spec in self.fields if spec.has_metadata]

    @property
    def excluded_from_update(self) -> List[FieldSpec]:
        return [spec for spec in self.fields if not spec.has_metadata]

    def field_for_column(self, column_name: str) -> Optional[FieldSpec]:
        return self._by_column.get(column_name)

    def values(self, record: BaseModel) -> List[Any]:
        """Bind values of every field in declaration order."""
        return [TypeMapper.to_store(getattr(record, spec.field_name)) for spec in self.fields]

    def update_values(self, record: BaseModel) -> List[Any]:
        """Bind values of the metadata-bearing fields in declaration order."""
        return [TypeMapper.to_store(getattr(record, spec.field_name))
                for spec in self.updatable_fields]

    def filter_pair(self, record: BaseModel) -> Optional[Tuple[str, Any]]:
        """
        Derive the implicit equality predicate from a record.

        The first field, in declaration order, whose value is not None supplies
        (column name, value).

        Args:
            record: Record instance used as a query-by-example

        Returns:
            (column name, bind value) or None when every field is None
        """
        for spec in self.fields:
            value = getattr(record, spec.field_name)
            if value is not None:
                return spec.column_name, TypeMapper.to_store(value)
        return None

    def from_row(self, row: Mapping[str, Any], table: Optional[str] = None) -> BaseModel:
        """
        Build a new record of this type from a result row.

        Args:
            row: Column name to value mapping
            table: Table the row came from, for error reporting

        Returns:
            Record instance

        Raises:
            MappingError: If the row and the record fields disagree
        """
        unknown = [column for column in row.keys() if column not in self._by_column]
        if unknown:
            raise MappingError(
                f"Result columns {unknown} have no field on {self.record_type.__name__}",
                table=table,
            )

        data = {}
        for spec in self.fields:
            if spec.column_name not in row:
                raise MappingError(
                    f"Column '{spec.column_name}' for field '{spec.field_name}' missing from result",
                    table=table,
                )
            data[spec.field_name] = TypeMapper.from_store(row[spec.column_name])

        try:
            return self.record_type.model_validate(data)
        except ValidationError as e:
            raise MappingError(
                f"Row does not validate as {self.record_type.__name__}: {e}", table=table
            ) from e

    def _resolve_primary_key(self) -> FieldSpec:
        flagged = [spec for spec in self.fields if spec.primary_key]
        if len(flagged) > 1:
            raise SchemaError(
                f"Record type '{self.record_type.__name__}' flags more than one primary key: "
                f"{[spec.field_name for spec in flagged]}"
            )
        if flagged:
            return flagged[0]
        # Convention: first declared field
        return self.fields[0]

    def _validate_autoincrement(self) -> None:
        for spec in self.fields:
            if not spec.autoincrement:
                continue
            if spec is not self.primary_key or spec.column_type != ColumnType.INTEGER:
                raise SchemaError(
                    f"Field '{spec.field_name}' is AUTOINCREMENT but not an INTEGER primary key"
                )


def describe(record_type: Type[BaseModel],
             columns: Optional[Mapping[str, Column]] = None) -> RecordDescriptor:
    """
    Build the descriptor of a record type.

    Args:
        record_type: pydantic model class
        columns: Optional per-field Column metadata overriding Annotated markers

    Returns:
        RecordDescriptor for the type

    Raises:
        SchemaError: If a field cannot be mapped (UnsupportedTypeError for types)
    """
    if not (isinstance(record_type, type) and issubclass(record_type, BaseModel)):
        raise SchemaError(f"Record type must be a pydantic model, got {record_type!r}")

    overrides = dict(columns or {})
    unknown = set(overrides) - set(record_type.model_fields)
    if unknown:
        raise SchemaError(f"Column metadata given for unknown fields {sorted(unknown)}")

    specs = []
    for field_name, field_info in record_type.model_fields.items():
        column = overrides.get(field_name) or _column_marker(field_info.metadata)
        specs.append(_field_spec(field_name, field_info.annotation, column))

    return RecordDescriptor(record_type, specs)


def _column_marker(metadata: List[Any]) -> Optional[Column]:
    for item in metadata:
        if isinstance(item, Column):
            return item
    return None


def _field_spec(field_name: str, annotation: Any, column: Optional[Column]) -> FieldSpec:
    if column is not None and column.name:
        column_name = column.name
    else:
        column_name = to_column_name(field_name)
    IdentifierValidator.validate_column_name(column_name)

    if column is not None and column.type is not None:
        column_type = column.type if isinstance(column.type, ColumnType) \
            else ColumnType.parse(column.type)
    elif TypeMapper.has_shape(annotation):
        column_type = TypeMapper.type_for(annotation)
    else:
        column_type = TypeMapper.type_for_name(field_name)

    if column is None:
        return FieldSpec(field_name=field_name, column_name=column_name,
                         column_type=column_type)

    return FieldSpec(
        field_name=field_name,
        column_name=column_name,
        column_type=column_type,
        nullable=column.nullable,
        primary_key=column.primary_key,
        unique=column.unique,
        autoincrement=column.autoincrement,
        has_metadata=True,
    )


class RecordRegistry:
    """Thread-safe registry of descriptors, one per record type."""

    def __init__(self):
        self._descriptors: Dict[Type[BaseModel], RecordDescriptor] = {}
        self._lock = threading.Lock()

    def register(self, record_type: Type[BaseModel],
                 columns: Optional[Mapping[str, Column]] = None) -> RecordDescriptor:
        """
        Register a record type, replacing any earlier descriptor.

        Args:
            record_type: pydantic model class
            columns: Optional per-field Column metadata

        Returns:
            The registered descriptor
        """
        descriptor = describe(record_type, columns)
        with self._lock:
            self._descriptors[record_type] = descriptor
        logger.debug(f"Registered record type {descriptor!r}")
        return descriptor

    def get(self, record_type: Type[BaseModel]) -> RecordDescriptor:
        """Descriptor for a record type, registering it on first use."""
        descriptor = self._descriptors.get(record_type)
        if descriptor is not None:
            return descriptor

        with self._lock:
            descriptor = self._descriptors.get(record_type)
            if descriptor is None:
                descriptor = describe(record_type)
                self._descriptors[record_type] = descriptor
                logger.debug(f"Registered record type {descriptor!r}")
        return descriptor

    def __contains__(self, record_type: Type[BaseModel]) -> bool:
        return record_type in self._descriptors
